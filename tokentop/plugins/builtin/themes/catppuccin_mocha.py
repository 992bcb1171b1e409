from tokentop.plugins.sdk import PluginMeta, ThemePlugin


class CatppuccinMochaTheme(ThemePlugin):
    id = "catppuccin-mocha"
    name = "Catppuccin Mocha"
    version = "1.0.0"
    family = "catppuccin"
    meta = PluginMeta(description="Soothing pastel theme, darkest flavor")

    color_scheme = "dark"
    colors = {
        "background": "#1e1e2e",
        "foreground": "#313244",
        "text": "#cdd6f4",
        "text_muted": "#a6adc8",
        "text_subtle": "#6c7086",
        "primary": "#89b4fa",
        "secondary": "#cba6f7",
        "accent": "#94e2d5",
        "success": "#a6e3a1",
        "warning": "#f9e2af",
        "error": "#f38ba8",
        "info": "#89dceb",
        "border": "#45475a",
        "border_muted": "#313244",
        "selection": "#45475a",
        "highlight": "#313244",
        "gauge_background": "#313244",
        "gauge_fill": "#89b4fa",
        "gauge_warning": "#f9e2af",
        "gauge_danger": "#f38ba8",
    }
    components = {
        "header": {"background": "#181825"},
        "status_bar": {"background": "#11111b"},
    }


catppuccin_mocha = CatppuccinMochaTheme()
