"""
Identity consolidation.

Folds every contact that shares an email or phone number with the request
into one group anchored on its oldest primary, then reports the group.
Group membership is derived from ``linkedId`` pointers on each call.
"""
import logging
from typing import Optional

from contact_repository import ContactFilter, ContactRepository, UpdateMany
from db_models import PRIMARY, SECONDARY, ContactRecord, ContactResponse
from errors import MissingContactInfoError, StaleContactError

logger = logging.getLogger(__name__)

# Discovery is re-run once when a contact it relied on was demoted meanwhile
CONSOLIDATE_ATTEMPTS = 2


class IdentityEngine:

    def __init__(self, repository: ContactRepository):
        self.repository = repository

    def identify(self, email: Optional[str] = None, phone: Optional[str] = None) -> ContactResponse:
        email = email or None
        phone = phone or None
        if not email and not phone:
            raise MissingContactInfoError()

        for attempt in range(1, CONSOLIDATE_ATTEMPTS + 1):
            try:
                return self._consolidate(email, phone)
            except StaleContactError as exc:
                if attempt == CONSOLIDATE_ATTEMPTS:
                    raise
                logger.warning("%s, rediscovering", exc)

    def _consolidate(self, email: Optional[str], phone: Optional[str]) -> ContactResponse:
        matches = self.repository.find_many(ContactFilter(email=email, phone_number=phone))
        logger.debug("Discovered %d contact(s) for email=%r phone=%r", len(matches), email, phone)

        if not matches:
            contact = self.repository.create(email=email, phone_number=phone, link_precedence=PRIMARY)
            logger.info("Created primary contact %d", contact.id)
            return build_response(contact, [contact])

        anchor, roots = self._select_anchor(matches)
        merge_happened = self._merge(anchor, roots)

        group = self.repository.find_many(ContactFilter.group(anchor.id))
        if not merge_happened and needs_alias(group, email, phone):
            alias = self.repository.create(
                email=email,
                phone_number=phone,
                link_precedence=SECONDARY,
                linked_id=anchor.id,
            )
            logger.info("Linked new secondary contact %d to primary %d", alias.id, anchor.id)
            group = self.repository.find_many(ContactFilter.group(anchor.id))

        return build_response(anchor, group)

    def _select_anchor(self, matches: list[ContactRecord]) -> tuple[ContactRecord, list[ContactRecord]]:
        """Pick the oldest root primary. Returns it with every resolved root."""
        root_ids = {contact.root_id for contact in matches if contact.root_id is not None}
        roots = self.repository.find_many(ContactFilter(ids=tuple(root_ids))) if root_ids else []

        if roots:
            anchor = roots[0]
            logger.debug("Anchor %d chosen from roots %s", anchor.id, [r.id for r in roots])
            return anchor, roots

        # roots missing or dangling: fall back to the oldest match
        anchor = matches[0]
        if not anchor.is_primary or anchor.linkedId is not None:
            logger.warning("Contact %d has no resolvable primary, promoting it", anchor.id)
            self.repository.update_many(
                ContactFilter(ids=(anchor.id,)),
                {"linkPrecedence": PRIMARY, "linkedId": None},
            )
            anchor = anchor.model_copy(update={"linkPrecedence": PRIMARY, "linkedId": None})
        return anchor, [anchor]

    def _merge(self, anchor: ContactRecord, roots: list[ContactRecord]) -> bool:
        """Demote every other root under the anchor in one transaction."""
        losers = tuple(root.id for root in roots if root.id != anchor.id)
        if not losers:
            return False

        self.repository.transaction(
            [
                UpdateMany(
                    ContactFilter(ids=losers),
                    {"linkPrecedence": SECONDARY, "linkedId": anchor.id},
                ),
                UpdateMany(
                    ContactFilter(linked_ids=losers),
                    {"linkedId": anchor.id},
                ),
            ],
            primaries=(anchor.id, *losers),
        )
        logger.info("Merged primaries %s into %d", list(losers), anchor.id)
        return True


def needs_alias(group: list[ContactRecord], email: Optional[str], phone: Optional[str]) -> bool:
    """True when the request brings an attribute the group has never seen."""
    new_email = email is not None and all(c.email != email for c in group)
    new_phone = phone is not None and all(c.phoneNumber != phone for c in group)
    exact_pair = any(c.email == email and c.phoneNumber == phone for c in group)
    return (new_email or new_phone) and not exact_pair


def build_response(anchor: ContactRecord, group: list[ContactRecord]) -> ContactResponse:
    return ContactResponse(
        primaryContactId=anchor.id,
        emails=sorted({c.email for c in group if c.email}),
        phoneNumbers=sorted({c.phoneNumber for c in group if c.phoneNumber}),
        secondaryContactIds=sorted(c.id for c in group if c.id != anchor.id),
    )
