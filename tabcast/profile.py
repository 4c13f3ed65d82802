from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict, field_validator

from . import config

class WindowSize(BaseModel):
    width: int = Field(default=config.WINDOW_SIZE[0], gt=0)
    height: int = Field(default=config.WINDOW_SIZE[1], gt=0)

class LaunchOptions(BaseModel):
    """
    Options for launching one browser session.
    """
    model_config = ConfigDict(extra='ignore')

    headless: bool = config.HEADLESS
    window: WindowSize = Field(default_factory=WindowSize)
    locale: str = config.DEFAULT_LOCALE
    timezone: str = config.DEFAULT_TIMEZONE

    # Appended after the baseline args; a later duplicate flag wins in the browser
    extra_args: List[str] = Field(default_factory=list)

    # None: allocate a free port
    port: Optional[int] = Field(default=None, gt=0, lt=65536)

    # 0 or None: never expires
    duration_sec: Optional[float] = Field(default=config.SESSION_DEFAULT_DURATION_SEC, ge=0)

    stealth: bool = config.STEALTH_ENABLED
    executable_path: Optional[str] = config.BROWSER_EXEC_PATH

    @field_validator("extra_args")
    @classmethod
    def _strip_empty(cls, v: List[str]) -> List[str]:
        return [a for a in v if a and a.strip()]

    def get_args(self, port: int) -> List[str]:
        args = [
            f'--remote-debugging-port={port}',
            f'--window-size={self.window.width},{self.window.height}',
            '--no-first-run',
            '--no-sandbox',
            '--disable-dev-shm-usage',
            '--disable-gpu',
            '--ignore-certificate-errors',
            '--enable-automation',
        ]
        args.extend(self.extra_args)
        return args

    @property
    def lifetime(self) -> Optional[float]:
        if self.duration_sec and self.duration_sec > 0:
            return float(self.duration_sec)
        return None
