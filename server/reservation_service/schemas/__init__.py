"""Pydantic schemas for request/response validation."""

from .cart import *  # noqa: F403
from .common import *  # noqa: F403
from .operations import *  # noqa: F403
from .payment import *  # noqa: F403
from .reservation import *  # noqa: F403
