from coctelera.models.api_user import ApiUser, AccountState
from coctelera.models.api_token import ApiToken

__all__ = ["ApiUser", "AccountState", "ApiToken"]
