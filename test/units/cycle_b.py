require_relative("./cycle_a.py")

B_DONE = True
