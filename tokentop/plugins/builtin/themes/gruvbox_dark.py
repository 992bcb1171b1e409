from tokentop.plugins.sdk import PluginMeta, ThemePlugin


class GruvboxDarkTheme(ThemePlugin):
    id = "gruvbox-dark"
    name = "Gruvbox Dark"
    version = "1.0.0"
    family = "gruvbox"
    meta = PluginMeta(description="Retro groove color scheme, dark variant")

    color_scheme = "dark"
    colors = {
        "background": "#282828",
        "foreground": "#3c3836",
        "text": "#ebdbb2",
        "text_muted": "#bdae93",
        "text_subtle": "#665c54",
        "primary": "#83a598",
        "secondary": "#d3869b",
        "accent": "#8ec07c",
        "success": "#b8bb26",
        "warning": "#fabd2f",
        "error": "#fb4934",
        "info": "#83a598",
        "border": "#504945",
        "border_muted": "#3c3836",
        "selection": "#504945",
        "highlight": "#3c3836",
        "gauge_background": "#3c3836",
        "gauge_fill": "#83a598",
        "gauge_warning": "#fabd2f",
        "gauge_danger": "#fb4934",
    }
    components = {
        "header": {"background": "#1d2021"},
        "status_bar": {"background": "#1d2021"},
    }


gruvbox_dark = GruvboxDarkTheme()
