"""Nigerian bank and fintech sender domains.

Structure:
BANK_MAPPINGS: Dict[str, BankInfo]
  Key: lowercase bank identifier, also used in ``Company.connected_banks``.
  Value: {
    name: Display label as it usually appears in alerts
    domains: Official sending domains (matched exactly or as a parent domain)
    category: commercial | non_interest | fintech | microfinance
  }

Guidelines for extending:
- Keys are lowercase, no spaces or punctuation.
- List the registrable domain only (``gtbank.com``); subdomains such as
  ``alerts.gtbank.com`` match automatically.
"""

from __future__ import annotations

from typing import Literal, TypedDict


class BankInfo(TypedDict):
    name: str
    domains: list[str]
    category: Literal["commercial", "non_interest", "fintech", "microfinance"]


BANK_MAPPINGS: dict[str, BankInfo] = {
    # --- Commercial banks ---
    "access": {
        "name": "Access Bank",
        "domains": ["accessbankplc.com", "accessbank.com"],
        "category": "commercial",
    },
    "gtbank": {
        "name": "GTBank",
        "domains": ["gtbank.com", "gtco.com"],
        "category": "commercial",
    },
    "firstbank": {
        "name": "First Bank",
        "domains": ["firstbanknigeria.com", "firstbank.com"],
        "category": "commercial",
    },
    "zenith": {
        "name": "Zenith Bank",
        "domains": ["zenithbank.com"],
        "category": "commercial",
    },
    "uba": {
        "name": "UBA",
        "domains": ["ubagroup.com", "uba.com"],
        "category": "commercial",
    },
    "fcmb": {
        "name": "FCMB",
        "domains": ["fcmb.com"],
        "category": "commercial",
    },
    "fidelity": {
        "name": "Fidelity Bank",
        "domains": ["fidelitybank.ng", "fidelitybankplc.com"],
        "category": "commercial",
    },
    "stanbic": {
        "name": "Stanbic IBTC",
        "domains": ["stanbicibtc.com"],
        "category": "commercial",
    },
    "sterling": {
        "name": "Sterling Bank",
        "domains": ["sterling.ng", "sterlingbankng.com"],
        "category": "commercial",
    },
    "union": {
        "name": "Union Bank",
        "domains": ["unionbankng.com"],
        "category": "commercial",
    },
    "wema": {
        "name": "Wema Bank",
        "domains": ["wemabank.com", "alat.ng"],
        "category": "commercial",
    },
    "ecobank": {
        "name": "Ecobank",
        "domains": ["ecobank.com"],
        "category": "commercial",
    },
    "polaris": {
        "name": "Polaris Bank",
        "domains": ["polarisbanklimited.com"],
        "category": "commercial",
    },
    "keystone": {
        "name": "Keystone Bank",
        "domains": ["keystonebankng.com"],
        "category": "commercial",
    },
    "providus": {
        "name": "Providus Bank",
        "domains": ["providusbank.com"],
        "category": "commercial",
    },
    # --- Non-interest banks ---
    "jaiz": {
        "name": "Jaiz Bank",
        "domains": ["jaizbankplc.com"],
        "category": "non_interest",
    },
    # --- Digital banks and fintechs ---
    "kuda": {
        "name": "Kuda",
        "domains": ["kuda.com", "kudabank.com"],
        "category": "fintech",
    },
    "opay": {
        "name": "Opay",
        "domains": ["opayweb.com", "opay-inc.com"],
        "category": "fintech",
    },
    "moniepoint": {
        "name": "Moniepoint",
        "domains": ["moniepoint.com", "teamapt.com"],
        "category": "fintech",
    },
    "palmpay": {
        "name": "PalmPay",
        "domains": ["palmpay.com"],
        "category": "fintech",
    },
    "vfd": {
        "name": "VFD Microfinance Bank",
        "domains": ["vfdbank.com", "vfdgroup.com"],
        "category": "microfinance",
    },
}


def all_bank_domains() -> list[str]:
    """Every known sending domain, lower-cased and de-duplicated."""
    return sorted(
        {domain.lower() for info in BANK_MAPPINGS.values() for domain in info["domains"]}
    )


__all__ = ["BANK_MAPPINGS", "BankInfo", "all_bank_domains"]
