"""Test that the project setup is working correctly."""

import eth_swap_indexer


def test_version() -> None:
    """Test that version is defined."""
    assert eth_swap_indexer.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from eth_swap_indexer import chain
    from eth_swap_indexer import ingestor
    from eth_swap_indexer import pricing
    from eth_swap_indexer import storage

    # Just verify imports work
    assert chain is not None
    assert ingestor is not None
    assert pricing is not None
    assert storage is not None
