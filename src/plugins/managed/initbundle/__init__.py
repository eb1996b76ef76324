"""InitBundle managed kind."""

from plugins.managed.initbundle.external import InitBundleClient, InitBundleConnector

__all__ = ["InitBundleClient", "InitBundleConnector"]
