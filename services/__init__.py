"""
Generation Router Services

Core services for credit-metered generation jobs:
- providers: External generation service adapters and registry
- pricing: Credit cost estimation
- health: Rolling provider health scores
- routing: Provider selection decision table
- ledger: Credit balances and transaction history
- enhancement: Prompt enhancement collaborator
- orchestrator: Job state machine tying everything together
"""
