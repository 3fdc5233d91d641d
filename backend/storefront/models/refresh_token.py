# storefront/models/refresh_token.py
from tortoise import fields, models


class RefreshToken(models.Model):
    """
    Stored refresh token.
    - token_hash: sha256(plain text token) 64-character hexadecimal string, unique (plain text not stored)
    - expires_at: server-side expiry, checked independently of the token's own claim
    """
    id = fields.IntField(pk=True)
    user: fields.ForeignKeyRelation["User"] = fields.ForeignKeyField(
        "models.User", related_name="refresh_tokens", on_delete=fields.CASCADE
    )
    token_hash = fields.CharField(max_length=64, unique=True, index=True)
    expires_at = fields.DatetimeField(index=True)
    created_at = fields.DatetimeField()

    class Meta:
        table = "refresh_tokens"
