from fastapi import Depends, HTTPException, status

from coursehub.core.current_user import get_current_user
from coursehub.models.user import ROLE_FACULTY, ROLE_STUDENT, User


def require_faculty(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != ROLE_FACULTY:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Faculty role required",
        )
    return current_user


def require_student(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != ROLE_STUDENT:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Student role required",
        )
    return current_user
