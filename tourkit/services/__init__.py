# Services package init
"""
Tourkit — Services Layer
==========================

Service Inventory:
    - AssetOptimizer: Downscale and re-encode large images (Pillow)
    - CredentialProvider (abstract): Supplies the storage access token
    - UploadCoordinator: Streamed uploads with retries and progress
    - AddressResolver: Throttled, failure-isolated geocoding
    - PlanningOracle (abstract): Text-in/text-out route planner
    - ChatCompletionPlanner: PlanningOracle over a chat-completions API
    - RouteSequencer: Asks the oracle for an order and repairs the answer
"""
