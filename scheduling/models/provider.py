"""Provider scheduling profile definitions."""

from sqlalchemy import Column, DateTime, Integer, Numeric, String

from scheduling.database import Base


class ProviderProfile(Base):
    """What the engine needs to know about a provider: rate and standing."""
    __tablename__ = "provider_profiles"

    provider_id = Column(String, primary_key=True)
    hourly_rate = Column(Numeric(10, 2), nullable=False)
    no_show_count = Column(Integer, nullable=False, default=0)
    suspended_at = Column(DateTime, nullable=True)

    @property
    def is_suspended(self) -> bool:
        return self.suspended_at is not None
