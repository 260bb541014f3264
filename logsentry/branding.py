"""Centralized branding constants: single source of truth for version."""


class AgentBranding:
    """Agent identity constants."""

    APP_NAME = "logsentry"
    VERSION = "1.0"

    @classmethod
    def user_agent(cls) -> str:
        return f"{cls.APP_NAME}/{cls.VERSION}"
