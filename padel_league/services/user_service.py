"""
User lookups for the identity dependency.
"""

from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from padel_league.database.models import User


def _user_to_dict(user: User) -> Dict:
    return {
        "id": user.id,
        "full_name": user.full_name,
        "email": user.email,
        "club_id": user.club_id,
        "role": user.role.value if user.role else None,
    }


async def get_user_by_id(session: AsyncSession, user_id: int) -> Optional[Dict]:
    """
    Get user by ID.

    Args:
        session: Database session
        user_id: User ID

    Returns:
        User dictionary or None if not found
    """
    result = await session.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    return _user_to_dict(user) if user else None
