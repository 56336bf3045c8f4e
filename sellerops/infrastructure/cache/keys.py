"""Key builders for the cooldown/lock store. Single place for key format.

Every key is ``{domain}:{name}:{entity_id}``. Domain and name must not
contain the separator; the entity id is the tail and may contain anything.
"""

from sellerops.core.constants import (
    KEY_DOMAIN_COOLDOWN,
    KEY_DOMAIN_LAST_GOOD,
    KEY_DOMAIN_LOCK,
    KEY_SEP,
)


def _validate_key_component(value: str, name: str) -> None:
    """Raise ValueError if value is empty or contains the key separator."""
    if not value:
        raise ValueError(f"Key component {name!r} must not be empty")
    if KEY_SEP in value:
        raise ValueError(
            f"Key component {name!r} must not contain separator {KEY_SEP!r}"
        )


def build_key(domain: str, name: str, entity_id: str) -> str:
    _validate_key_component(domain, "domain")
    _validate_key_component(name, "name")
    if not entity_id:
        raise ValueError("Key component 'entity_id' must not be empty")
    return f"{domain}{KEY_SEP}{name}{KEY_SEP}{entity_id}"


def cooldown_key(rule_id: str, entity_id: str) -> str:
    """Cooldown for one rule firing on one entity."""
    return build_key(KEY_DOMAIN_COOLDOWN, rule_id, entity_id)


def lock_key(lock_name: str, entity_id: str) -> str:
    """Advisory lock guarding per-entity work (e.g. feature recompute)."""
    return build_key(KEY_DOMAIN_LOCK, lock_name, entity_id)


def last_good_key(lock_name: str, entity_id: str) -> str:
    """Last successful result of a lock-guarded computation."""
    return build_key(KEY_DOMAIN_LAST_GOOD, lock_name, entity_id)
