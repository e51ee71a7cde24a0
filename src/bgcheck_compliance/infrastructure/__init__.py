"""
Infrastructure Package
======================

Process-wide infrastructure shared by bounded contexts (database engine and
sessions).
"""
