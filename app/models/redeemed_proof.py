from datetime import datetime

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field
from pymongo import ASCENDING, IndexModel


class RedeemedProof(Document):
    """Nonce of a captcha proof that already paid out; kept until the proof would expire anyway."""
    nonce: Indexed(str, unique=True)
    user_id: PydanticObjectId
    expires_at: datetime
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "redeemed_proofs"
        indexes = [IndexModel([("expires_at", ASCENDING)], expireAfterSeconds=0)]
