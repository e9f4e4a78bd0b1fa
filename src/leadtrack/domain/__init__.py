from leadtrack.domain.models import Client, Interaction, Profile
from leadtrack.domain.rules import ValidationError

__all__ = [
    "Client",
    "Interaction",
    "Profile",
    "ValidationError",
]
