"""consult-orchestrator - gate development checkpoints on specialist agent consultations."""

__version__ = "0.1.0"
