from tokentop.plugins.sdk import PluginMeta, ThemePlugin


class SolarizedLightTheme(ThemePlugin):
    id = "solarized-light"
    name = "Solarized Light"
    version = "1.0.0"
    family = "solarized"
    meta = PluginMeta(description="Precision colors for machines and people, light variant")

    color_scheme = "light"
    colors = {
        "background": "#fdf6e3",
        "foreground": "#eee8d5",
        "text": "#657b83",
        "text_muted": "#839496",
        "text_subtle": "#93a1a1",
        "primary": "#268bd2",
        "secondary": "#6c71c4",
        "accent": "#2aa198",
        "success": "#859900",
        "warning": "#b58900",
        "error": "#dc322f",
        "info": "#268bd2",
        "border": "#93a1a1",
        "border_muted": "#eee8d5",
        "selection": "#eee8d5",
        "highlight": "#eee8d5",
        "gauge_background": "#eee8d5",
        "gauge_fill": "#268bd2",
        "gauge_warning": "#b58900",
        "gauge_danger": "#dc322f",
    }
    components = {
        "header": {"background": "#eee8d5"},
        "status_bar": {"background": "#eee8d5"},
    }


solarized_light = SolarizedLightTheme()
