from proposal_engine.agents.section_writer.agent import SectionWriterAgent

__all__ = ["SectionWriterAgent"]
