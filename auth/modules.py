"""
auth/modules.py -- Installed-modules registry.

Rights only count for modules that are currently installed: deactivating a
module must revoke access through it even while groups_rights_* rows still
mention it. The registry answers "which modules are installed right now".

Failure policy: if the modules table cannot be read, the registry reports no
installed modules. Authorization then falls back to the always-allowed list
only; an unreadable registry never widens access.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping

from sqlalchemy.exc import SQLAlchemyError

from auth.store import AuthStore

logger = logging.getLogger("backoffice.auth.modules")

# /private/extensions/install_module?module=X, optionally with a two-letter
# interface language segment: /private/en/extensions/install_module?module=X
_INSTALL_MODULE_RE = re.compile(r"/private(/\w\w)?/extensions/install_module\?")


class ModuleRegistry:
    """Reads installed module names from the store.

    available_modules is the list of modules shipped with the install. It is
    only used to vet the install-module bootstrap: a module that is being
    installed by the current request counts as installed for that request,
    provided it is one of the available ones.
    """

    def __init__(self, store: AuthStore, available_modules: Iterable[str] = ()) -> None:
        self.store = store
        self.available_modules = frozenset(available_modules)

    def is_installing_module(self, request_uri: str, query: Mapping[str, str]) -> bool:
        return bool(
            _INSTALL_MODULE_RE.search(request_uri or "")
            and query.get("module")
            and query["module"] in self.available_modules
        )

    def get_installed_modules(self, request_uri: str = "", query: Mapping[str, str] | None = None) -> set[str]:
        query = query or {}
        names: set[str] = set()
        if self.is_installing_module(request_uri, query):
            names.add(query["module"])

        try:
            names.update(self.store.get_module_names())
        except SQLAlchemyError:
            logger.exception("Could not read installed modules; denying all non-public modules")
            return set()

        return names
