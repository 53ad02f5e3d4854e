from kapsule.billing.entitlements import ActiveEntitlement, Tier, find_active_entitlement, tier_for_status
from kapsule.billing.revenuecat import (
    LookupFailed,
    PurchaseData,
    RevenueCatClient,
    RevenueCatError,
    SubscriberFound,
    SubscriberMissing,
)
from kapsule.billing.sync import EVENT_HANDLERS, SyncOutcome, dispatch_event

__all__ = [
    "ActiveEntitlement",
    "EVENT_HANDLERS",
    "LookupFailed",
    "PurchaseData",
    "RevenueCatClient",
    "RevenueCatError",
    "SubscriberFound",
    "SubscriberMissing",
    "SyncOutcome",
    "Tier",
    "dispatch_event",
    "find_active_entitlement",
    "tier_for_status",
]
