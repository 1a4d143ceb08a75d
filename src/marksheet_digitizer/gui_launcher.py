def main():
    from importlib import resources
    from streamlit.web import cli as stcli
    import sys
    script = str(resources.files("marksheet_digitizer") / "app_streamlit.py")
    sys.argv = ["streamlit", "run", script, *sys.argv[1:]]
    raise SystemExit(stcli.main())
