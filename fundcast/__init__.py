"""fundcast: how much will a crowdfunding campaign raise?

Two-stage model per platform (Kickstarter: all-or-nothing, Indiegogo:
keep-what-you-raise):
- logistic P(met goal) as a function of log10(goal)
- Gamma distributions of the raised fraction, one for campaigns that met
  their goal (excess over goal) and one for those that did not, with a rate
  that moves linearly with the goal, fit by MCMC

`fundcast.api` is the entry point: fit / survival / quantile / save / load.
"""
