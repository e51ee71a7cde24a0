"""Background-check compliance tracker."""
