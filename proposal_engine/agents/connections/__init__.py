from proposal_engine.agents.connections.agent import ConnectionsAgent

__all__ = ["ConnectionsAgent"]
