chat_messages_sql = """
CREATE TABLE chat_messages (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    chat_room_id TEXT NOT NULL DEFAULT 'general',
    sender_id UUID REFERENCES auth.users(id) ON DELETE CASCADE,
    recipient_id UUID REFERENCES auth.users(id) ON DELETE SET NULL,
    content TEXT NOT NULL,
    is_read BOOLEAN NOT NULL DEFAULT FALSE,
    -- Tag generated by the sending client, used to drop its own echo
    client_id TEXT,
    created_at TIMESTAMPTZ DEFAULT now()
);

CREATE INDEX chat_messages_room_created_idx
    ON chat_messages (chat_room_id, created_at);
"""
