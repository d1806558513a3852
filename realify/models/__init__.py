from realify.models.billing import ProcessedStripeEvent, Subscription
from realify.models.generation import GenerationHistory

__all__ = ["Subscription", "ProcessedStripeEvent", "GenerationHistory"]
