"""HTTP surface for driving the messaging client in scenario tests."""
