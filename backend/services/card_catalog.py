"""Issuer card catalog - product names used to label auto-imported cards.

The matcher only needs ``catalog_names(issuer)``. The catalog itself is
the built-in :data:`DEFAULT_CATALOG`, optionally merged with a remote
copy fetched from ``settings.CARD_CATALOG_URL`` at most once every 30
days and cached in the document store.
"""

import logging
import time
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable

import httpx
from sqlalchemy.orm import Session

from config import settings
from services.document_store import CARD_CATALOG_KEY, CARD_CATALOG_UPDATED_KEY, DocumentStore

logger = logging.getLogger(__name__)

REFRESH_INTERVAL_SECONDS = 60 * 60 * 24 * 30

DEFAULT_CATALOG: dict[str, Any] = {
    "lastUpdated": "2026-02-22",
    "issuers": {
        "Amex": {
            "personal": [
                "The Platinum Card from American Express",
                "American Express Gold Credit Card",
                "American Express Green Card",
                "American Express Blue Cash Everyday Card",
                "American Express Blue Cash Preferred Card",
                "Cash Magnet Card",
                "Delta SkyMiles Reserve American Express Card",
                "Delta SkyMiles Platinum American Express Card",
                "Delta SkyMiles Gold American Express Card",
                "Delta SkyMiles Blue American Express Card",
                "Hilton Honors American Express Card",
                "Hilton Honors American Express Surpass Card",
                "Hilton Honors American Express Aspire Card",
                "Marriott Bonvoy Brilliant American Express Card",
                "Marriott Bonvoy Bevy American Express Card",
                "Marriott Bonvoy American Express Card",
            ],
            "business": [
                "The Business Platinum Card from American Express",
                "American Express Business Gold Card",
                "American Express Business Green Rewards Card",
                "The Plum Card",
                "American Express Blue Business Plus Card",
                "American Express Blue Business Cash Card",
                "Amazon Business Prime Card",
                "Amazon Business Card",
                "Delta SkyMiles Reserve Business American Express Card",
                "Delta SkyMiles Platinum Business American Express Card",
                "Delta SkyMiles Gold Business American Express Card",
                "Hilton Honors American Express Business Card",
                "Marriott Bonvoy Business American Express Card",
                "Lowe's Business Rewards Card",
                "Lowe's Business Credit Card",
            ],
        },
        "Chase": {
            "personal": [
                "Chase Sapphire Reserve",
                "Chase Sapphire Preferred",
                "Chase Freedom Unlimited",
                "Chase Freedom Flex",
                "Chase Freedom Rise",
                "Slate",
                "Southwest Rapid Rewards Plus",
                "Southwest Rapid Rewards Priority",
                "Southwest Rapid Rewards Premier",
                "United Explorer",
                "United Quest",
                "United Gateway",
                "United Club Infinite",
                "Marriott Bonvoy Boundless",
                "Marriott Bonvoy Bountiful",
                "Marriott Bonvoy Bold",
                "IHG One Rewards Premier",
                "IHG One Rewards Traveler",
                "Disney Inspire Visa",
                "Disney Premier Visa",
                "Disney Visa",
                "World of Hyatt",
                "Aeroplan",
                "British Airways Visa Signature",
                "Aer Lingus Visa Signature",
                "Iberia Visa Signature",
                "Prime Visa",
                "Amazon Visa",
                "DoorDash Rewards Mastercard",
                "Instacart Mastercard",
            ],
            "business": [
                "Sapphire Reserve for Business",
                "Ink Business Unlimited",
                "Ink Business Preferred",
                "Ink Business Cash",
                "Ink Business Premier",
                "Southwest Rapid Rewards Performance Business",
                "Southwest Rapid Rewards Premier Business",
                "United Business",
                "United Club Business",
                "IHG One Rewards Premier Business",
                "World of Hyatt Business",
            ],
        },
        "Discover": {
            "personal": [
                "Discover it Cash Back",
                "Discover it Student Cash Back",
                "Discover it Student Chrome",
                "Discover it Secured",
                "Discover it Miles",
                "Discover it Chrome",
                "Discover NHL Credit Card",
            ],
            "business": [],
        },
        "Bank of America": {
            "personal": [
                "Bank of America Customized Cash Rewards credit card",
                "Bank of America Unlimited Cash Rewards credit card",
                "Bank of America Travel Rewards credit card",
                "Bank of America Premium Rewards credit card",
                "Bank of America Premium Rewards Elite credit card",
                "Alaska Airlines Visa Signature credit card",
                "Free Spirit Travel More World Elite Mastercard",
            ],
            "business": [
                "Business Advantage Customized Cash Rewards Mastercard",
                "Business Advantage Unlimited Cash Rewards Mastercard",
                "Business Advantage Travel Rewards World Mastercard",
                "Alaska Airlines Visa Business card",
            ],
        },
        "Barclays": {
            "personal": [
                "JetBlue Plus Card",
                "JetBlue Card",
                "AAdvantage Aviator Red World Elite Mastercard",
                "AAdvantage Aviator Silver World Elite Mastercard",
                "Wyndham Rewards Earner Card",
                "Wyndham Rewards Earner Plus Card",
                "Choice Privileges Select Mastercard",
                "Choice Privileges Mastercard",
                "Hawaiian Airlines World Elite Mastercard",
                "Frontier Airlines World Mastercard",
            ],
            "business": [
                "JetBlue Business Card",
                "AAdvantage Aviator Business Mastercard",
                "Wyndham Rewards Earner Business Card",
            ],
        },
        "Capital One": {
            "personal": [
                "Quicksilver Cash Rewards",
                "QuicksilverOne Cash Rewards",
                "SavorOne Cash Rewards",
                "Savor Cash Rewards",
                "Venture Rewards",
                "Venture X Rewards",
                "VentureOne Rewards",
                "Platinum Mastercard",
            ],
            "business": [
                "Spark Cash Plus",
                "Spark Cash Select",
                "Spark Miles for Business",
                "Spark Miles Select",
                "Venture X Business",
            ],
        },
        "Citi": {
            "personal": [
                "Citi Custom Cash Card",
                "Citi / AAdvantage Platinum Select World Elite Mastercard",
                "American Airlines AAdvantage MileUp Card",
                "Citi / AAdvantage Executive World Elite Mastercard",
                "Citi Diamond Preferred Card",
                "Citi Double Cash Credit Card",
                "Costco Anywhere Visa Card by Citi",
                "Citi Simplicity Card",
                "Citi Strata Card",
                "Citi Strata Premier Card",
                "Citi Strata Elite Card",
                "Citi Secured Mastercard",
            ],
            "business": [
                "Citi / AAdvantage Business World Elite Mastercard",
                "Costco Anywhere Visa Business Card by Citi",
            ],
        },
        "FNBO": {
            "personal": ["FNBO Evergreen Rewards Visa Card", "FNBO Getaway Rewards Visa Card"],
            "business": ["Evergreen by FNBO Business Credit Card"],
        },
        "Goldman Sachs": {
            "personal": ["Apple Card", "My GM Rewards Card"],
            "business": [],
        },
        "HSBC": {
            "personal": ["HSBC Elite Credit Card", "HSBC Premier Credit Card"],
            "business": [],
        },
        "Navy Federal": {
            "personal": [
                "cashRewards Credit Card",
                "Platinum Credit Card",
                "GO REWARDS Credit Card",
                "More Rewards American Express Card",
                "Visa Signature Flagship Rewards Credit Card",
                "nRewards Secured Credit Card",
            ],
            "business": [],
        },
        "PenFed": {
            "personal": [
                "PenFed Power Cash Rewards Visa Signature",
                "PenFed Platinum Rewards Visa Signature",
                "PenFed Gold Visa Card",
            ],
            "business": [],
        },
        "Synchrony": {
            "personal": [
                "Verizon Visa Card",
                "Sam's Club Mastercard",
                "PayPal Cashback Mastercard",
                "Venmo Credit Card",
                "Amazon Store Card",
                "Lowe's Advantage Card",
            ],
            "business": ["Sam's Club Business Mastercard"],
        },
        "TD Bank": {
            "personal": ["TD Double Up Credit Card", "TD Clear Credit Card", "TD Cash Credit Card"],
            "business": ["TD Business Solutions Credit Card"],
        },
        "US Bank": {
            "personal": [
                "U.S. Bank Altitude Reserve Visa Infinite Card",
                "U.S. Bank Altitude Go Visa Signature Card",
                "U.S. Bank Altitude Connect Visa Signature Card",
                "U.S. Bank Cash+ Visa Signature Card",
                "U.S. Bank Shopper Cash Rewards Visa Signature Card",
            ],
            "business": [
                "U.S. Bank Business Altitude Power World Elite Mastercard",
                "U.S. Bank Business Leverage Visa Signature Card",
                "U.S. Bank Triple Cash Rewards Visa Business Card",
            ],
        },
        "USAA": {
            "personal": [
                "USAA Cashback Rewards Plus American Express",
                "USAA Rate Advantage Visa Platinum",
                "USAA Rewards Visa Signature",
            ],
            "business": [],
        },
        "Wells Fargo": {
            "personal": [
                "Wells Fargo Active Cash Card",
                "Wells Fargo Autograph Card",
                "Wells Fargo Autograph Journey Card",
                "Wells Fargo Reflect Card",
                "Bilt World Elite Mastercard",
            ],
            "business": ["Signify Business Cash Card by Wells Fargo"],
        },
        "Other": {
            "personal": [
                "Fidelity Rewards Visa Signature Card",
                "Robinhood Gold Card",
                "X1 Card",
                "Sofi Credit Card",
                "Coinbase Card",
                "Petal 2 Visa Credit Card",
            ],
            "business": ["Brex Card", "Ramp Card", "Divvy Corporate Card"],
        },
    },
}


@dataclass
class CatalogCard:
    """One product entry for an issuer."""

    name: str
    type: str  # "personal" | "business"
    status: str = "active"  # "active" | "discontinued"


def get_issuer_cards(issuer: str | None, catalog: dict | None = None) -> list[CatalogCard]:
    """List an issuer's products, personal first, de-duplicated case-insensitively."""
    issuers = (catalog or {}).get("issuers") or DEFAULT_CATALOG["issuers"]
    entry = issuers.get(issuer or "")
    if not entry:
        return []

    discontinued = {n.lower() for n in entry.get("discontinued") or []}
    cards: list[CatalogCard] = []
    seen: set[str] = set()
    for card_type in ("personal", "business"):
        for name in entry.get(card_type) or []:
            key = name.lower().strip()
            if key in seen:
                continue
            seen.add(key)
            status = "discontinued" if name.lower() in discontinued else "active"
            cards.append(CatalogCard(name=name, type=card_type, status=status))
    return cards


def catalog_names(issuer: str | None, catalog: dict | None = None) -> list[str]:
    """Product names for ``issuer``; empty when the issuer is unknown."""
    return [card.name for card in get_issuer_cards(issuer, catalog)]


def lookup_for(catalog: dict | None) -> Callable[[str], list[str]]:
    """Bind ``catalog_names`` to a loaded catalog."""
    return partial(catalog_names, catalog=catalog)


def merge_catalog(local: dict, remote: dict | None) -> dict:
    """Overlay a remote catalog on the local one.

    Remote products come first; local products the remote copy does not
    list are kept after them, and discontinued lists are unioned.
    """
    if not remote or not remote.get("issuers"):
        return local

    merged = {**remote, "issuers": dict(remote["issuers"])}
    for issuer, local_entry in (local.get("issuers") or {}).items():
        remote_entry = merged["issuers"].get(issuer) or {}
        entry: dict[str, list[str]] = {}
        for card_type in ("personal", "business"):
            remote_names = list(remote_entry.get(card_type) or [])
            known = {n.lower() for n in remote_names}
            entry[card_type] = remote_names + [
                n for n in local_entry.get(card_type) or [] if n.lower() not in known
            ]
        entry["discontinued"] = list(dict.fromkeys(
            list(remote_entry.get("discontinued") or [])
            + list(local_entry.get("discontinued") or [])
        ))
        merged["issuers"][issuer] = entry
    return merged


class CardCatalogService:
    """Loads the card catalog, refreshing the cached copy when it is stale."""

    def __init__(self, url: str | None = None, http_client: httpx.Client | None = None):
        self._url = settings.CARD_CATALOG_URL if url is None else url
        self._http_client = http_client

    def load(self, db: Session) -> dict:
        """Return the cached catalog (or the default), refreshed if due.

        Remote failures are logged and the cached catalog is returned.
        """
        catalog = DocumentStore.get(db, CARD_CATALOG_KEY) or DEFAULT_CATALOG
        updated_at = DocumentStore.get(db, CARD_CATALOG_UPDATED_KEY)

        if not self._url or not self._is_stale(updated_at):
            return catalog

        try:
            remote = self._fetch_remote()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Card catalog refresh failed, using cached copy: %s", e)
            return catalog

        catalog = merge_catalog(catalog, remote)
        DocumentStore.set(db, CARD_CATALOG_KEY, catalog)
        DocumentStore.set(db, CARD_CATALOG_UPDATED_KEY, time.time())
        logger.info(
            "Card catalog refreshed: %d issuers", len(catalog.get("issuers") or {})
        )
        return catalog

    @staticmethod
    def _is_stale(updated_at: float | None) -> bool:
        if updated_at is None:
            return True
        return time.time() - float(updated_at) > REFRESH_INTERVAL_SECONDS

    def _fetch_remote(self) -> dict:
        client = self._http_client or httpx.Client(timeout=15.0)
        try:
            response = client.get(self._url)
            response.raise_for_status()
            data = response.json()
        finally:
            if self._http_client is None:
                client.close()
        if not isinstance(data, dict):
            raise ValueError("card catalog response is not an object")
        return data
