# -*- coding: utf-8 -*-

import os
import logging
import importlib
from typing import Any, Callable, Optional

from ..batching.errors import ConfigurationError
from ..batching.followup import FollowUpHook
from ..batching.transport import (DryRunTransport, EnvTokenProvider,
                                  StaticTokenProvider, TransportAdapter)

DRY_RUN = "dry-run"


def load_callable(import_path: str) -> Callable[..., Any]:
    """
    Resolve a "package.module:attribute" import path.

    Raises:
        ConfigurationError: If the path is malformed or cannot be imported.
    """
    module_name, sep, attribute = str(import_path).partition(":")
    if not sep or not module_name or not attribute:
        raise ConfigurationError(f"Expected 'module:attribute', got {import_path!r}.")
    try:
        target = importlib.import_module(module_name)
        for part in attribute.split("."):
            target = getattr(target, part)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load {import_path!r}: {e}") from e
    if not callable(target):
        raise ConfigurationError(f"{import_path!r} is not callable.")
    return target


def create_transport(transport: str = DRY_RUN, options: Optional[dict] = None) -> TransportAdapter:
    """
    Create the transport adapter named in an upload profile.

    Args:
        transport (str): "dry-run", or the import path of a factory (or
            class) returning an adapter, e.g. "my_adapters.odata:SupplierInvoiceTransport".
        options (dict): Keyword arguments passed to the factory.
    """
    options = dict(options or {})
    if transport == DRY_RUN:
        client = DryRunTransport(**options)
    else:
        client = load_callable(transport)(**options)
        if not callable(getattr(client, "submit", None)):
            raise ConfigurationError(f"Transport created by {transport!r} has no submit() method.")
    logging.info(f"Transport '{transport}' created successfully.")
    return client


def create_token_provider(token_env: Optional[str] = None, token: Optional[str] = None):
    """
    Create the token provider of an upload.

    An explicit token wins over the environment variable. Without either,
    requests are sent without a token.
    """
    if token:
        return StaticTokenProvider(token)
    if token_env:
        if not os.getenv(token_env):
            logging.warning(f"Environment variable {token_env} is not set. Submitting without a token.")
        return EnvTokenProvider(token_env)
    return StaticTokenProvider(None)


def create_follow_up(action: Optional[str], flag_field: str = "GRNCreate", dedupe_field: Optional[str] = None):
    """
    Create the follow-up hook named in an upload profile.

    Args:
        action (str): Import path of `fn(outcome, record)`. None disables follow-ups.
        flag_field (str): Record field requesting the follow-up.
        dedupe_field (str): Field of the created document shared by
            records that need a single follow-up call.
    """
    if not action:
        return None

    dedupe_key = None
    if dedupe_field:
        def dedupe_key(outcome):
            payload = outcome.result_payload
            return payload.get(dedupe_field) if isinstance(payload, dict) else None

    return FollowUpHook(load_callable(action), flag_field=flag_field, dedupe_key=dedupe_key)
