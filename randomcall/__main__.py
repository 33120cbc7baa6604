from randomcall.main import run

run()
