"""
Session planning.

Components:
- CandidateGenerator: review/new/teaching candidate pools
- priority_ranker: weighted priority score
- TimeBudgetPlanner: time budget -> item count
- selection: per-mode candidate selection
- interleaver: teach-then-test and interleaving orchestration
- modality_selector: delivery method choice per question
- SessionPlanCache: TTL cache of composed plans
- SessionPlanner / ContentDeliveryService: plan composition and cache-through access
"""
