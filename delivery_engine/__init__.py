"""
Adaptive content delivery engine for language learning.

Builds ordered session plans (teach -> practice -> recap) from a learner's
history, skill mastery and time budget. Entry point:
delivery_engine.planning.service.ContentDeliveryService.
"""

__version__ = "1.0.0"
