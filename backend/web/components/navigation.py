"""
Navigation Component for PDS

Role-based sidebar that adapts to the user type (admin/teacher/parent).
"""

from typing import Optional, Dict, Any, List, Tuple
from .base import Component

NavItem = Tuple[str, str]

NAV_CONFIG: Dict[str, List[NavItem]] = {
    "super_admin": [("/super-admin", "Platform")],
    "admin": [("/admin", "Dashboard")],
    "school_admin": [("/admin", "Dashboard")],
    "teacher": [("/teacher", "Dashboard")],
    "parent": [("/parent", "Dashboard"), ("/parent/onboarding", "Link school & children")],
}

ROLE_LABELS = {
    "super_admin": "Platform administrator",
    "admin": "Administrator",
    "school_admin": "School administrator",
    "teacher": "Teacher",
    "parent": "Parent",
}


class Navigation(Component):
    """Navigation component with role-based menu items"""

    def __init__(self, user: Optional[Dict[str, Any]] = None, current_path: str = "/"):
        self.user = user
        self.current_path = current_path or "/"

    def render(self) -> str:
        if not self.user:
            items = self._create_nav_link("/login", "Sign in", is_active=self.current_path == "/login")
            footer = ""
        else:
            nav_items = self._get_nav_items()
            active = self._determine_active_href(nav_items)
            links = [self._create_nav_link(href, text, is_active=href == active) for href, text in nav_items]
            links.append(self._render_logout())
            items = "".join(links)
            footer = f"""
            <div class="sidebar-footer">
                <div class="user-name">{self.escape(self.user.get("name", ""))}</div>
                <div class="user-role">{self.escape(self._role_label(self.user.get("role")))}</div>
            </div>"""
        return f"""
    <aside class="sidebar" id="sidebar" aria-label="Sidebar">
        <nav class="sidebar-nav" role="navigation" aria-label="Main navigation">
            <div class="sidebar-header"><span class="sidebar-title">PDS</span></div>
            <div class="sidebar-items">{items}</div>{footer}
        </nav>
    </aside>"""

    def _get_nav_items(self) -> List[NavItem]:
        """Unknown roles get no entries; visibility never grants permissions."""
        role = str((self.user or {}).get("role", "")).lower()
        return NAV_CONFIG.get(role, [])

    def _determine_active_href(self, items: List[NavItem]) -> Optional[str]:
        """Pick the single active href using best prefix match."""
        best, best_len = None, 0
        for href, _text in items:
            if href == self.current_path:
                return href
            if self.current_path.startswith(href + "/") and len(href) > best_len:
                best, best_len = href, len(href)
        return best

    def _create_nav_link(self, href: str, text: str, is_active: bool = False) -> str:
        active_class = " active" if is_active else ""
        aria_attr = ' aria-current="page"' if is_active else ""
        return f"""
        <a href="{href}" class="sidebar-link{active_class}"{aria_attr}>
            <span class="nav-text">{self.escape(text)}</span>
        </a>"""

    def _render_logout(self) -> str:
        return """
        <a href="/auth/logout" class="sidebar-link sidebar-logout">
            <span class="nav-text">Sign out</span>
        </a>"""

    @staticmethod
    def _role_label(role: Optional[str]) -> str:
        return ROLE_LABELS.get((role or "").lower(), "User")
