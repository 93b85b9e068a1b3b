contact_requests_sql = """
CREATE TYPE request_status AS ENUM ('pending', 'accepted', 'rejected');

create table contact_requests (
  id UUID PRIMARY KEY DEFAULT gen_random_uuid(),

  sender_id  uuid references auth.users(id) on delete cascade,
  recipient_id  uuid references auth.users(id) on delete cascade,

  status request_status NOT NULL DEFAULT 'pending',

  created_at timestamp with time zone default now(),

  CONSTRAINT prevent_self_request CHECK (sender_id <> recipient_id)
);

-- At most one outstanding request per ordered pair; answered ones may repeat.
CREATE UNIQUE INDEX one_pending_request_per_pair
  ON contact_requests (sender_id, recipient_id)
  WHERE status = 'pending';
"""

contacts_sql = """
CREATE TABLE contacts (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),

    user_id UUID NOT NULL REFERENCES auth.users(id) ON DELETE CASCADE,
    contact_id UUID NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,

    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),

    -- One row per direction: accepting A -> B writes (A, B) and (B, A)
    CONSTRAINT unique_contact_edge UNIQUE (user_id, contact_id),
    CONSTRAINT prevent_self_contact CHECK (user_id <> contact_id)
);
"""
