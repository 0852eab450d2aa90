"""
Suitekit - Test Suite Package.

Unit tests per component (tags, config, session, cli) plus end-to-end
plugin tests driven through pytest's pytester fixture.
"""
