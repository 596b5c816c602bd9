"""
Services package for the EPG catchup library

This package contains the fetch, decode, parse, cache, matching and catchup components.
Import from the submodules directly, e.g. `epg_catchup.services.epg_load_service`.
"""
