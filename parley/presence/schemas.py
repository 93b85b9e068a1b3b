from pydantic import BaseModel
from typing import List


class OnlineUsersResponseModel(BaseModel):
    online: List[str]
