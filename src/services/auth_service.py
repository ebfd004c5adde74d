"""
Authentication Service
Resolves the calling user from the bearer token and guards routes by role
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from src.config.database import get_db
from src.models.user import User
from src.utils.exceptions import ForbiddenError
from src.utils.security import decode_token
from src.utils.logger import setup_logger

logger = setup_logger()

# Token issuance lives with the identity provider
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token")


class AuthService:
    """Authentication service"""

    async def get_current_user(
        self,
        token: str = Depends(oauth2_scheme),
        db: Session = Depends(get_db)
    ) -> User:
        """
        Get current authenticated user from token

        Args:
            token: JWT token
            db: Database session

        Returns:
            User: Current user

        Raises:
            HTTPException: If authentication fails
        """
        credentials_exception = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

        payload = decode_token(token)
        if payload is None:
            raise credentials_exception

        user_id = payload.get("sub")
        if user_id is None:
            raise credentials_exception

        try:
            user = db.query(User).filter(User.id == int(user_id)).first()
        except (TypeError, ValueError):
            raise credentials_exception

        if user is None:
            raise credentials_exception

        if not user.is_active:
            raise ForbiddenError("User account is inactive")

        return user

    def require_role(self, *roles: str):
        """
        Dependency factory requiring one of the given role(s)

        Args:
            roles: Accepted role values ("Student", "Faculty", ...)
        """
        async def role_checker(current_user: User = Depends(self.get_current_user)):
            if current_user.role.value not in roles:
                logger.info(f"User {current_user.id} ({current_user.role.value}) denied, needs {roles}")
                raise ForbiddenError(
                    f"Access denied. Required role(s): {', '.join(roles)}",
                    {"role": current_user.role.value}
                )
            return current_user

        return role_checker


# Create singleton instance
auth_service = AuthService()
