"""
Minimal ABIs for the tBTC contracts the client interacts with.
"""

from typing import Any


def _params(params: list[tuple[str, str]]) -> list[dict[str, Any]]:
    return [{"name": name, "type": type_} for name, type_ in params]


def _function(
    name: str,
    inputs: list[tuple[str, str]],
    outputs: list[tuple[str, str]] | None = None,
    mutability: str = "nonpayable",
) -> dict[str, Any]:
    return {
        "inputs": _params(inputs),
        "name": name,
        "outputs": _params(outputs or []),
        "stateMutability": mutability,
        "type": "function",
    }


def _view(name: str, inputs: list[tuple[str, str]], output_type: str) -> dict[str, Any]:
    return _function(name, inputs, [("", output_type)], "view")


def _event(name: str, params: list[tuple[str, str]], indexed: tuple[str, ...]) -> dict[str, Any]:
    return {
        "anonymous": False,
        "inputs": [
            {"name": name, "type": type_, "indexed": name in indexed}
            for name, type_ in params
        ],
        "name": name,
        "type": "event",
    }


FUNDING_PROOF_INPUTS = [
    ("_txVersion", "bytes4"),
    ("_txInputVector", "bytes"),
    ("_txOutputVector", "bytes"),
    ("_txLocktime", "bytes4"),
    ("_fundingOutputIndex", "uint8"),
    ("_merkleProof", "bytes"),
    ("_txIndexInBlock", "uint256"),
    ("_bitcoinHeaders", "bytes"),
]

TBTC_SYSTEM_ABI = [
    _view("getAllowedLotSizes", [], "uint64[]"),
    _view("isAllowedLotSize", [("_requestedLotSizeSatoshis", "uint64")], "bool"),
    _view("createNewDepositFeeEstimate", [], "uint256"),
    _view("getTxProofDifficultyFactor", [], "uint256"),
    _event(
        "Created",
        [
            ("_depositContractAddress", "address"),
            ("_keepAddress", "address"),
            ("_timestamp", "uint256"),
        ],
        ("_depositContractAddress", "_keepAddress"),
    ),
    _event(
        "RegisteredPubkey",
        [
            ("_depositContractAddress", "address"),
            ("_signingGroupPubkeyX", "bytes32"),
            ("_signingGroupPubkeyY", "bytes32"),
            ("_timestamp", "uint256"),
        ],
        ("_depositContractAddress",),
    ),
    _event(
        "Funded",
        [
            ("_depositContractAddress", "address"),
            ("_txid", "bytes32"),
            ("_timestamp", "uint256"),
        ],
        ("_depositContractAddress", "_txid"),
    ),
    _event(
        "RedemptionRequested",
        [
            ("_depositContractAddress", "address"),
            ("_requester", "address"),
            ("_digest", "bytes32"),
            ("_utxoSize", "uint256"),
            ("_redeemerOutputScript", "bytes"),
            ("_requestedFee", "uint256"),
            ("_outpoint", "bytes"),
        ],
        ("_depositContractAddress", "_requester", "_digest"),
    ),
]

TBTC_CONSTANTS_ABI = [
    _view("getMinimumRedemptionFee", [], "uint256"),
]

DEPOSIT_FACTORY_ABI = [
    _function(
        "createDeposit",
        [("_lotSizeSatoshis", "uint64")],
        [("", "address")],
        "payable",
    ),
]

DEPOSIT_ABI = [
    _view("getCurrentState", [], "uint256"),
    _view("inActive", [], "bool"),
    _view("lotSizeSatoshis", [], "uint64"),
    _view("utxoSize", [], "uint256"),
    _view("getRedemptionTbtcRequirement", [("_redeemer", "address")], "uint256"),
    _view("getOwnerRedemptionTbtcRequirement", [("_redeemer", "address")], "uint256"),
    _function("retrieveSignerPubkey", []),
    _function("provideBTCFundingProof", FUNDING_PROOF_INPUTS),
    _function(
        "requestRedemption",
        [("_outputValueBytes", "bytes8"), ("_redeemerOutputScript", "bytes")],
    ),
]

BONDED_ECDSA_KEEP_ABI = [
    _event("PublicKeyPublished", [("publicKey", "bytes")], ()),
]

TBTC_TOKEN_ABI = [
    _view("balanceOf", [("account", "address")], "uint256"),
    _function("approve", [("spender", "address"), ("amount", "uint256")], [("", "bool")]),
    _event(
        "Transfer",
        [("from", "address"), ("to", "address"), ("value", "uint256")],
        ("from", "to"),
    ),
]

TBTC_DEPOSIT_TOKEN_ABI = [
    _view("ownerOf", [("tokenId", "uint256")], "address"),
    _function("approve", [("to", "address"), ("tokenId", "uint256")]),
]

FEE_REBATE_TOKEN_ABI = [
    _view("ownerOf", [("tokenId", "uint256")], "address"),
]

VENDING_MACHINE_ABI = [
    _function("tdtToTbtc", [("_tdtId", "uint256")]),
    _function(
        "tbtcToBtc",
        [
            ("_depositAddress", "address"),
            ("_outputValueBytes", "bytes8"),
            ("_redeemerOutputScript", "bytes"),
            ("_finalRecipient", "address"),
        ],
    ),
    _function(
        "unqualifiedDepositToTbtc",
        [("_depositAddress", "address")] + FUNDING_PROOF_INPUTS,
    ),
]

ABIS = {
    "TBTCSystem": TBTC_SYSTEM_ABI,
    "TBTCConstants": TBTC_CONSTANTS_ABI,
    "DepositFactory": DEPOSIT_FACTORY_ABI,
    "Deposit": DEPOSIT_ABI,
    "BondedECDSAKeep": BONDED_ECDSA_KEEP_ABI,
    "TBTCToken": TBTC_TOKEN_ABI,
    "TBTCDepositToken": TBTC_DEPOSIT_TOKEN_ABI,
    "FeeRebateToken": FEE_REBATE_TOKEN_ABI,
    "VendingMachine": VENDING_MACHINE_ABI,
}
