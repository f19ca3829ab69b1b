import os
import tomllib
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

import tomli_w


DEFAULT_CONFIG = """
[imap]
host = "127.0.0.1"
port = 1143
username = "you@email.ml"
password = "BRIDGE_PASSWORD"
starttls = true

[smtp]
host = "127.0.0.1"
port = 1025
username = "you@email.ml"
password = "BRIDGE_PASSWORD"
starttls = true

[user]
name = "Your Name"
email = "you@email.ml"
"""


class ConfigError(RuntimeError):
    pass


class ParseError(ConfigError):
    pass


class PersistError(ConfigError):
    pass


@dataclass
class MailServerConfig:
    host: str = ""
    port: int = 0
    username: str = ""
    password: str = ""
    starttls: bool = True


@dataclass
class UserConfig:
    name: str = ""
    email: str = ""


@dataclass
class Config:
    imap: MailServerConfig = field(default_factory=MailServerConfig)
    smtp: MailServerConfig = field(default_factory=MailServerConfig)
    user: UserConfig = field(default_factory=UserConfig)

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {
            "imap": _server_to_dict(self.imap),
            "smtp": _server_to_dict(self.smtp),
            "user": {"name": self.user.name, "email": self.user.email},
        }

    def secrets(self) -> Tuple[str, str]:
        return self.imap.password, self.smtp.password


def _server_to_dict(server: MailServerConfig) -> Dict[str, Any]:
    return {
        "host": server.host,
        "port": server.port,
        "username": server.username,
        "password": server.password,
        "starttls": server.starttls,
    }


def config_path() -> str:
    xdg = os.environ.get("XDG_CONFIG_HOME", "").strip()
    if xdg:
        base = os.path.abspath(os.path.expanduser(xdg))
    else:
        home = os.path.expanduser("~")
        if not home or home == "~":
            raise ConfigError("cannot determine configuration directory")
        base = os.path.join(home, ".config")
    return os.path.join(base, "zenmail", "config.toml")


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = data.get(name)
    if not isinstance(section, dict):
        raise ParseError(f"missing [{name}] section")
    return section


def _text(section: Dict[str, Any], section_name: str, key: str) -> str:
    value = section.get(key)
    if not isinstance(value, str):
        raise ParseError(f"{section_name}.{key} must be a string")
    return value


def _server(data: Dict[str, Any], name: str) -> MailServerConfig:
    section = _section(data, name)
    port = section.get("port")
    # bool is an int subclass; reject it explicitly
    if not isinstance(port, int) or isinstance(port, bool) or not 0 <= port <= 65535:
        raise ParseError(f"{name}.port must be an integer between 0 and 65535")
    starttls = section.get("starttls")
    if not isinstance(starttls, bool):
        raise ParseError(f"{name}.starttls must be true or false")
    return MailServerConfig(
        host=_text(section, name, "host"),
        port=port,
        username=_text(section, name, "username"),
        password=_text(section, name, "password"),
        starttls=starttls,
    )


def parse_config(text: str) -> Config:
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as err:
        raise ParseError(f"invalid TOML: {err}") from err

    user = _section(data, "user")
    return Config(
        imap=_server(data, "imap"),
        smtp=_server(data, "smtp"),
        user=UserConfig(name=_text(user, "user", "name"), email=_text(user, "user", "email")),
    )


def load_config(path: str) -> Config:
    try:
        with open(path, "r", encoding="utf-8") as fp:
            text = fp.read()
    except OSError as err:
        raise ConfigError(f"cannot read {path}: {err}") from err
    except UnicodeDecodeError as err:
        raise ParseError(f"{path} is not valid UTF-8: {err}") from err
    return parse_config(text)


def load_or_create(path: str) -> Tuple[Config, bool]:
    """Load the configuration at ``path``, writing the default template first
    when the file does not exist yet.

    Returns the configuration and whether the template was just created.
    """
    if not os.path.exists(path):
        parent = os.path.dirname(path)
        try:
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(path, "w", encoding="utf-8") as fp:
                fp.write(DEFAULT_CONFIG)
        except OSError as err:
            raise PersistError(f"cannot create {path}: {err}") from err
        return parse_config(DEFAULT_CONFIG), True

    return load_config(path), False


def save_config(config: Config, path: str) -> None:
    try:
        payload = tomli_w.dumps(config.to_dict())
    except (TypeError, ValueError) as err:
        raise PersistError(f"cannot serialize configuration: {err}") from err

    tmp_path = path + ".tmp"
    try:
        with open(tmp_path, "w", encoding="utf-8") as fp:
            fp.write(payload)
        os.replace(tmp_path, path)
    except OSError as err:
        try:
            os.remove(tmp_path)
        except OSError:
            pass
        raise PersistError(f"cannot write {path}: {err}") from err
