from auto_py_env.cli import app

if __name__ == "__main__":
    app(prog_name="auto-py-env")
