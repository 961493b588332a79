from .datetime_tool import DateTimeTool
from .search import GooglePSEProvider, clean_search_query, format_search_results
from .weather import OpenWeatherProvider, extract_location, format_weather

__all__ = [
    "DateTimeTool",
    "GooglePSEProvider",
    "OpenWeatherProvider",
    "clean_search_query",
    "extract_location",
    "format_search_results",
    "format_weather",
]
