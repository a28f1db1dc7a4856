from skyvault.engines.browser.data_browser import DataBrowser

__all__ = ["DataBrowser"]
