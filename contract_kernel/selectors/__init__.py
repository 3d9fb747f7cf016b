"""Read-only selectors for the contract kernel."""

from contract_kernel.selectors.contract_selector import ContractSelector

__all__ = ["ContractSelector"]
