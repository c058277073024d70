"""Coverage Bounded Context.

Responsible for RF propagation and signal analysis:
- Value Objects: Cell, EnvironmentLayer, RadiationPattern, SignalTable
- Services: PropagationModel, PropagationContext, dominance
"""
