"""Loyalty service exports."""

from .card_service import (  # noqa: F401
    CardTransactionOutcome,
    ExpirySweepSummary,
    LoyaltyCardService,
)
from .events import (  # noqa: F401
    CardCreated,
    CardStatusChanged,
    EventPublisher,
    LoggingEventPublisher,
    OutboxDispatcher,
    PointsAdded,
    RecordingEventPublisher,
    RewardRedeemed,
    StampsIssued,
)
from .program_service import LoyaltyProgramService, ProgramAnalytics  # noqa: F401
from .result import OperationResult  # noqa: F401
