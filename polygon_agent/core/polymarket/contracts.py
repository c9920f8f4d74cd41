"""Polymarket contract addresses on Polygon mainnet (chain 137)."""

POLYGON_CHAIN_ID = 137

USDC_E = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"  # 6 decimals
CTF = "0x4D97DCd97eC945f40cF65F87097ACe5EA0476045"
CTF_EXCHANGE = "0x4bFb41d5B3570DeFd03C39a9A4D8dE6Bd8B8982E"
NEG_RISK_CTF_EXCHANGE = "0xC5d563A36AE78145C45a50134d48A1215220f80a"
NEG_RISK_ADAPTER = "0xd91E80cF2E7be2e162c6513ceD06f1dD0dA35296"

USDC_DECIMALS = 6


def exchange_for(neg_risk: bool) -> str:
    return NEG_RISK_CTF_EXCHANGE if neg_risk else CTF_EXCHANGE


def split_target_for(neg_risk: bool) -> str:
    return NEG_RISK_ADAPTER if neg_risk else CTF


def collateral_spenders(neg_risk: bool) -> list:
    """Contracts that pull USDC.e from the signing identity."""
    if neg_risk:
        return [CTF_EXCHANGE, NEG_RISK_CTF_EXCHANGE, NEG_RISK_ADAPTER]
    return [CTF_EXCHANGE, CTF]


def custody_operators(neg_risk: bool) -> list:
    """Operators that need setApprovalForAll on the CTF to move outcome tokens."""
    if neg_risk:
        return [CTF_EXCHANGE, NEG_RISK_CTF_EXCHANGE, NEG_RISK_ADAPTER]
    return [CTF_EXCHANGE]
