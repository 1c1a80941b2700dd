"""
Layout Component for PDS

Main layout wrapper that combines navigation and page content into a complete
HTML document.
"""

from typing import Optional, Dict, Any
from .base import Component
from .navigation import Navigation


class Layout(Component):
    """Main layout component that assembles the complete page"""

    def __init__(
        self,
        title: str,
        content: str,
        user: Optional[Dict[str, Any]] = None,
        show_nav: bool = True,
        current_path: str = "/",
        refresh_after: Optional[float] = None,
        refresh_url: Optional[str] = None,
        scripts: tuple[str, ...] = (),
    ):
        """
        Args:
            title: Page title (will be escaped)
            content: Main content HTML (pre-rendered components)
            user: Current user snapshot (optional)
            show_nav: Whether to show navigation (default: True)
            current_path: Current URL path for active navigation highlighting
            refresh_after: Seconds until the browser follows `refresh_url`
            refresh_url: Target of the delayed redirect (in-app path)
            scripts: Extra same-origin script URLs (CSP forbids inline scripts in prod)
        """
        self.title = title
        self.content = content
        self.user = user
        self.show_nav = show_nav
        self.current_path = current_path
        self.refresh_after = refresh_after
        self.refresh_url = refresh_url
        self.scripts = scripts

    def render(self) -> str:
        """Render the complete HTML document including navigation."""
        nav_html = Navigation(self.user, self.current_path).render() if self.show_nav else ""

        return f"""<!DOCTYPE html>
<html lang="en">
<head>
    {self._render_head()}
</head>
<body>
    <a href="#main-content" class="skip-link">Skip to main content</a>

    {nav_html}

    <div id="live-region" class="sr-only" role="status" aria-live="polite" aria-atomic="true"></div>

    <main id="main-content" class="main-content" role="main">
        {self._render_main_inner()}
    </main>
</body>
</html>"""

    def _render_head(self) -> str:
        refresh_meta = ""
        if self.refresh_after is not None and self.refresh_url:
            refresh_meta = (
                f'<meta http-equiv="refresh" content="{self.refresh_after:g}; url={self.escape(self.refresh_url)}">'
            )
        script_tags = "".join(f'<script src="{self.escape(src)}" defer></script>' for src in self.scripts)
        return f"""
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <meta name="description" content="PDS - Positive Discipline System">
    {refresh_meta}
    <title>{self.escape(self.title)} - PDS</title>
    <link rel="stylesheet" href="/static/css/pds.css?v=1">
    {script_tags}
    """

    def _render_main_inner(self) -> str:
        return f"""
        {self.content}

        <footer class="content-footer" role="contentinfo">
            <p class="text-center text-muted">PDS - Positive Discipline System</p>
        </footer>
        """
