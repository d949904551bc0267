"""Global configuration — loaded from environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings


class BrainSettings(BaseSettings):
    db_path: Path = Path(".botbrain/bot_brain.db")
    log_level: str = "INFO"

    # Roster of agents driven by the reflection scheduler
    agents: str = "Alex,Blaze,Cora,Dune,Eli"

    # Movement tuning
    exploration_constant: float = 1.4
    arms_file: str = ""  # JSON arm catalog; empty = built-in catalog

    # Advisor ("" disables reflection, otherwise "ollama" or "anthropic")
    advisor_provider: str = ""
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.1:8b-instruct"
    anthropic_api_key: str = ""
    default_model: str = "claude-sonnet-4-20250514"
    advisor_timeout_seconds: float = 60.0
    advisor_temperature: float = 0.2
    advisor_max_tokens: int = 800

    # Reflection scheduling
    reflection_interval_seconds: float = 3600.0  # hourly
    reflection_window_minutes: int = 60
    scheduler_concurrency: int = 1  # 1 = agents reflect one after another

    model_config = {"env_prefix": "BOTBRAIN_"}

    def roster(self) -> list[str]:
        """Configured agent ids, deduplicated, in declaration order."""
        seen: list[str] = []
        for name in self.agents.split(","):
            name = name.strip()
            if name and name not in seen:
                seen.append(name)
        return seen


settings = BrainSettings()
