from __future__ import annotations

import datetime as dt
import re
from typing import TYPE_CHECKING

from lxml import etree

if TYPE_CHECKING:
    from .ledger import AgentInfo, LocationInfo

PROV_NS = "http://www.w3.org/ns/prov#"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"
EX_NS = "urn:tiani:prova"
HPD_NS = "IHEHPD"
IDP_NS = "idp"

DOCUMENT_NSMAP = {"prov": PROV_NS, "xsi": XSI_NS, "ex": EX_NS}

ENTITY_ID = "theobject"
SEGMENT_ID = "thesegment"
ACTIVITY_ID = "theobjectcreation"

_TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")


class InvalidTimestampError(ValueError):
    """Raised when a generation time is not in ``YYYY-MM-DDTHH:MM:SS.mmmZ`` form."""


def format_timestamp(moment: dt.datetime) -> str:
    if moment.tzinfo is not None:
        moment = moment.astimezone(dt.timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def validate_timestamp(value: str) -> dt.datetime:
    if not _TIMESTAMP_RE.match(value):
        raise InvalidTimestampError(f"invalid generation time {value!r}")
    try:
        parsed = dt.datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%fZ")
    except ValueError as exc:
        raise InvalidTimestampError(f"invalid generation time {value!r}") from exc
    return parsed.replace(tzinfo=dt.timezone.utc)


def _prov(tag: str) -> str:
    return f"{{{PROV_NS}}}{tag}"


def _text_child(parent: etree._Element, tag: str, text: str) -> etree._Element:
    child = etree.SubElement(parent, tag)
    child.text = text
    return child


def _ref(parent: etree._Element, tag: str, ref: str) -> None:
    etree.SubElement(parent, _prov(tag), {_prov("ref"): ref})


def _entity(document: etree._Element, entity_id: str, digest: str, label: str,
            location: LocationInfo | None) -> None:
    entity = etree.SubElement(document, _prov("entity"), {_prov("id"): entity_id})
    _text_child(entity, _prov("label"), label)
    location_el = etree.SubElement(entity, _prov("location"))
    if location is not None:
        etree.SubElement(
            location_el,
            f"{{{EX_NS}}}location",
            {
                "id": location.id,
                "name": location.name,
                "locality": location.locality,
                "docid": location.document_unique_id,
            },
        )
    _text_child(entity, _prov("type"), "XML")
    _text_child(entity, _prov("value"), digest)


def _activity(document: etree._Element, action: str) -> None:
    activity = etree.SubElement(document, _prov("activity"), {_prov("id"): ACTIVITY_ID})
    _text_child(activity, _prov("type"), action)


def _agent(document: etree._Element, agent: AgentInfo) -> None:
    agent_el = etree.SubElement(document, _prov("agent"), {_prov("id"): agent.id})
    _text_child(agent_el, _prov("type"), agent.atype)
    doctor_id = etree.SubElement(agent_el, f"{{{HPD_NS}}}doctorid", nsmap={"hpd": HPD_NS})
    doctor_id.text = agent.id
    doctor_name = etree.SubElement(agent_el, f"{{{HPD_NS}}}doctorname", nsmap={"hpd": HPD_NS})
    doctor_name.text = agent.name
    idp = etree.SubElement(agent_el, f"{{{IDP_NS}}}idp", nsmap={"hpd": IDP_NS})
    idp.text = agent.identity_provider


def _relations(document: etree._Element, agent: AgentInfo, generated_at: str) -> None:
    generated = etree.SubElement(document, _prov("wasGeneratedBy"))
    _ref(generated, "entity", ENTITY_ID)
    _ref(generated, "activity", ACTIVITY_ID)
    _text_child(generated, _prov("time"), generated_at)

    associated = etree.SubElement(document, _prov("wasAssociatedWith"))
    _ref(associated, "activity", ACTIVITY_ID)
    _ref(associated, "agent", agent.id)


def _serialise(document: etree._Element) -> str:
    return etree.tostring(
        document, xml_declaration=True, encoding="UTF-8", pretty_print=True
    ).decode("utf-8")


def build_provenance_document(
    digest: str,
    agent: AgentInfo,
    location: LocationInfo | None,
    action: str,
    generated_at: str,
) -> str:
    """Build the W3C PROV-XML record stored for a document fingerprint.

    The record states that the entity identified by ``digest`` was generated by
    ``action``, that the activity was associated with ``agent`` and that the
    entity is attributed to that agent.
    """
    validate_timestamp(generated_at)
    document = etree.Element(_prov("document"), nsmap=DOCUMENT_NSMAP)
    _entity(document, ENTITY_ID, digest, "The object document", location)
    _activity(document, action)
    _agent(document, agent)
    _relations(document, agent, generated_at)

    attributed = etree.SubElement(document, _prov("wasAttributedTo"))
    _ref(attributed, "entity", ENTITY_ID)
    _ref(attributed, "agent", agent.id)
    return _serialise(document)


def build_segment_document(
    segment_digest: str,
    digest: str,
    agent: AgentInfo,
    location: LocationInfo | None,
    action: str,
    generated_at: str,
) -> str:
    """Build the PROV-XML record for a segment derived from the document ``digest``."""
    validate_timestamp(generated_at)
    document = etree.Element(_prov("document"), nsmap=DOCUMENT_NSMAP)
    _entity(document, ENTITY_ID, digest, "The object document", location)
    _entity(document, SEGMENT_ID, segment_digest, "The CDA Segment", location)
    _activity(document, action)
    _agent(document, agent)
    _relations(document, agent, generated_at)

    used = etree.SubElement(document, _prov("used"))
    _ref(used, "activity", ACTIVITY_ID)
    _ref(used, "entity", ENTITY_ID)

    derived = etree.SubElement(document, _prov("wasDerivedFrom"))
    _ref(derived, "generatedEntity", SEGMENT_ID)
    _ref(derived, "usedEntity", ENTITY_ID)
    return _serialise(document)


__all__ = [
    "InvalidTimestampError",
    "PROV_NS",
    "build_provenance_document",
    "build_segment_document",
    "format_timestamp",
    "validate_timestamp",
]
