"""
Governor ABI fragments and event topics used by the watcher.
"""

from web3 import Web3

PROPOSAL_CREATED_SIGNATURE = "ProposalCreated(uint256,address,address,bytes,uint256,uint256,string)"
PROPOSAL_EXECUTED_SIGNATURE = "ProposalExecuted(uint256)"

PROPOSAL_CREATED_TOPIC = Web3.to_hex(Web3.keccak(text=PROPOSAL_CREATED_SIGNATURE))
PROPOSAL_EXECUTED_TOPIC = Web3.to_hex(Web3.keccak(text=PROPOSAL_EXECUTED_SIGNATURE))

GOVERNOR_ABI = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "internalType": "uint256", "name": "proposalId", "type": "uint256"},
            {"indexed": False, "internalType": "address", "name": "proposer", "type": "address"},
            {"indexed": False, "internalType": "address", "name": "target", "type": "address"},
            {"indexed": False, "internalType": "bytes", "name": "data", "type": "bytes"},
            {"indexed": False, "internalType": "uint256", "name": "start", "type": "uint256"},
            {"indexed": False, "internalType": "uint256", "name": "end", "type": "uint256"},
            {"indexed": False, "internalType": "string", "name": "description", "type": "string"},
        ],
        "name": "ProposalCreated",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "internalType": "uint256", "name": "proposalId", "type": "uint256"},
        ],
        "name": "ProposalExecuted",
        "type": "event",
    },
    {
        "inputs": [],
        "name": "CLOCK_MODE",
        "outputs": [{"internalType": "string", "name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
]
